import pytest

from fisheye_viewer.config import ViewerConfig, config_from_dict, load_config


def test_defaults():
  config = ViewerConfig()

  assert config.initial_load_count == 10
  assert config.num_workers == 4
  assert config.worker_delay == 0.005
  assert config.max_decode_retries == 0
  assert config.focal_expansion == 2.5
  assert config.stereo_prompt_threshold == 1000
  assert config.mono_prompt_threshold == 2000


def test_invalid_values():
  with pytest.raises(ValueError):
    ViewerConfig(num_workers=0)
  with pytest.raises(ValueError):
    ViewerConfig(focal_expansion=0.0)
  with pytest.raises(ValueError):
    ViewerConfig(max_decode_retries=-1)


def test_replace_ignores_none():
  config = ViewerConfig().replace(num_workers=8, initial_load_count=None)

  assert config.num_workers == 8
  assert config.initial_load_count == 10


def test_load_config(tmp_path):
  path = tmp_path / 'viewer.yaml'
  path.write_text("num_workers: 2\nfocal_expansion: 4.0\ndisplay_max_size: null\n")

  config = load_config(str(path))

  assert config.num_workers == 2
  assert config.focal_expansion == 4.0
  assert config.display_max_size is None
  assert config.initial_load_count == 10


def test_empty_config_file(tmp_path):
  path = tmp_path / 'viewer.yaml'
  path.write_text("")

  assert load_config(str(path)) == ViewerConfig()


def test_unknown_key():
  with pytest.raises(ValueError, match='num_threads'):
    config_from_dict({'num_threads': 3})


def test_bad_files(tmp_path):
  with pytest.raises(FileNotFoundError):
    load_config(str(tmp_path / 'missing.yaml'))

  path = tmp_path / 'list.yaml'
  path.write_text("- 1\n")
  with pytest.raises(ValueError):
    load_config(str(path))

  path = tmp_path / 'bad.yaml'
  path.write_text("num_workers: [1\n")
  with pytest.raises(ValueError):
    load_config(str(path))


def test_to_dict_round_trip():
  config = ViewerConfig(num_workers=6)

  assert config_from_dict(config.to_dict()) == config


def test_counts_must_be_integers():
  with pytest.raises(ValueError, match='num_workers'):
    config_from_dict({'num_workers': 2.5, 'initial_load_count': 0})
  with pytest.raises(ValueError, match='max_decode_retries'):
    ViewerConfig(max_decode_retries=True)
  with pytest.raises(ValueError, match='window_width'):
    ViewerConfig(window_width='1600')
  with pytest.raises(ValueError, match='focal_expansion'):
    ViewerConfig(focal_expansion='wide')

  assert ViewerConfig(focal_expansion=4, display_max_size=None).focal_expansion == 4


def test_float_count_in_config_file(tmp_path):
  path = tmp_path / 'viewer.yaml'
  path.write_text("num_workers: 2.5\n")

  with pytest.raises(ValueError, match='must be an integer'):
    load_config(str(path))
