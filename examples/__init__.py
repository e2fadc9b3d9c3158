"""
Fisheye Viewer Tests and Examples

This package contains the test suite and example scripts of the fisheye viewer:
- Calibration, projection and map cache tests
- Dataset scanning, image cache and background loading tests
- Command line front end tests
- Map generation benchmark
"""
