"""
Fisheye Viewer GUI Applications

Tkinter front ends built on the core package:
- Dataset viewer for mono and stereo captures, raw or rectified
- Single image undistortion tool with live parameter tuning
"""
