import json
import logging

import pytest

from coolingd.config import (ValidationConfig, default_config, load_config_file,
                             parse_verbosity, setup_logging, validate_config)
from coolingd.errors import EXIT_CONFIG, ConfigError
from coolingd.trip_points import AUTO, MAX, TripPoint

MAX_PSTATE = 10


def raw_with(trip_points, interval=1.5):
    raw = default_config()
    raw['interval_sec'] = interval
    raw['trip_points'] = trip_points
    return raw


def test_default_config_is_valid():
    config = validate_config(default_config(), MAX_PSTATE)
    assert config.interval == 1.5
    assert config.trip_points == (
        TripPoint(1, 50000, 2, 255, None),
        TripPoint(2, 60000, 3, 255, 3),
        TripPoint(3, 70000, 4, 255, 5),
        TripPoint(4, 85000, 5, MAX, MAX),
    )


def test_indices_are_dense_and_one_based():
    config = validate_config(raw_with([{'temp': 40000}, {'temp': 40000}, {'temp': 90000}]), 3)
    assert [tp.index for tp in config.trip_points] == [1, 2, 3]


def test_defaults_for_missing_fields():
    config = validate_config(raw_with([{'temp': 50000}]), MAX_PSTATE)
    tp = config.trip_points[0]
    assert tp.debounce == 0
    assert tp.fan is None
    assert tp.pstate is None


def test_empty_strings_mean_no_change():
    config = validate_config(raw_with([{'temp': 50000, 'fan': '', 'pstate': ''}]), MAX_PSTATE)
    assert config.trip_points[0].fan is None
    assert config.trip_points[0].pstate is None


def test_decreasing_thresholds_rejected():
    with pytest.raises(ConfigError, match='order'):
        validate_config(raw_with([{'temp': 60000}, {'temp': 59999}]), MAX_PSTATE)


@pytest.mark.parametrize('temp', [19999, 120001, None, '', 'hot', 55000.5, True,
                                  '--50000', '²'])
def test_threshold_out_of_range_or_malformed(temp):
    with pytest.raises(ConfigError):
        validate_config(raw_with([{'temp': temp}]), MAX_PSTATE)


def test_threshold_bounds_inclusive():
    config = validate_config(raw_with([{'temp': ValidationConfig.MIN_TEMP},
                                       {'temp': ValidationConfig.MAX_TEMP}]), MAX_PSTATE)
    assert len(config.trip_points) == 2


@pytest.mark.parametrize('debounce', [-1, 'x', 1.5, '--2', '²'])
def test_bad_debounce_rejected(debounce):
    with pytest.raises(ConfigError, match='DEBOUNCE'):
        validate_config(raw_with([{'temp': 50000, 'debounce': debounce}]), MAX_PSTATE)


@pytest.mark.parametrize('fan,expected', [
    ('auto', AUTO), ('max', MAX), (0, 0), (255, 255), ('200', 200),
])
def test_fan_settings(fan, expected):
    config = validate_config(raw_with([{'temp': 50000, 'fan': fan}]), MAX_PSTATE)
    assert config.trip_points[0].fan == expected


@pytest.mark.parametrize('fan', [256, -1, 'full', False, 12.5, '--5', '²'])
def test_bad_fan_rejected(fan):
    with pytest.raises(ConfigError, match='FAN'):
        validate_config(raw_with([{'temp': 50000, 'fan': fan}]), MAX_PSTATE)


def test_pstate_bounded_by_probe():
    config = validate_config(raw_with([{'temp': 50000, 'pstate': MAX_PSTATE}]), MAX_PSTATE)
    assert config.trip_points[0].pstate == MAX_PSTATE
    with pytest.raises(ConfigError, match='PSTATE'):
        validate_config(raw_with([{'temp': 50000, 'pstate': MAX_PSTATE + 1}]), MAX_PSTATE)


@pytest.mark.parametrize('pstate', [-1, 'auto', 'min', '--1', '²'])
def test_bad_pstate_rejected(pstate):
    with pytest.raises(ConfigError):
        validate_config(raw_with([{'temp': 50000, 'pstate': pstate}]), MAX_PSTATE)


@pytest.mark.parametrize('interval', [0.09, 0, -1, '1.5', None, True,
                                      float('nan'), float('inf'), float('-inf')])
def test_bad_interval_rejected(interval):
    with pytest.raises(ConfigError, match='INTERVAL_SEC'):
        validate_config(raw_with([{'temp': 50000}], interval=interval), MAX_PSTATE)


def test_minimum_interval_accepted():
    config = validate_config(raw_with([{'temp': 50000}], interval=0.1), MAX_PSTATE)
    assert config.interval == 0.1


def test_no_trip_points_rejected():
    with pytest.raises(ConfigError):
        validate_config(raw_with([]), MAX_PSTATE)


def test_unknown_trip_point_key_rejected():
    with pytest.raises(ConfigError, match='unknown'):
        validate_config(raw_with([{'temp': 50000, 'speed': 10}]), MAX_PSTATE)


def test_config_error_exit_code():
    assert ConfigError('x').exit_code == EXIT_CONFIG


def test_load_config_file_overrides_defaults(tmp_path):
    path = tmp_path / 'coolingd.json'
    path.write_text(json.dumps({
        'interval_sec': 2,
        'trip_points': [{'temp': 65000, 'debounce': 1, 'fan': 'auto', 'pstate': 'max'}],
    }))
    raw = load_config_file(str(path))
    assert raw['interval_sec'] == 2
    assert raw['control_sensor'] == default_config()['control_sensor']

    config = validate_config(raw, MAX_PSTATE)
    assert config.trip_points == (TripPoint(1, 65000, 1, AUTO, MAX),)


def test_load_config_file_errors(tmp_path):
    with pytest.raises(ConfigError, match='Cannot read'):
        load_config_file(str(tmp_path / 'missing.json'))

    bad = tmp_path / 'bad.json'
    bad.write_text('{not json')
    with pytest.raises(ConfigError, match='Malformed'):
        load_config_file(str(bad))

    unknown = tmp_path / 'unknown.json'
    unknown.write_text('{"trip_point": []}')
    with pytest.raises(ConfigError, match='Unknown config keys'):
        load_config_file(str(unknown))

    not_object = tmp_path / 'list.json'
    not_object.write_text('[]')
    with pytest.raises(ConfigError):
        load_config_file(str(not_object))


@pytest.mark.parametrize('value,expected', [(None, 2), ('', 2), ('0', 0), (3, 3)])
def test_parse_verbosity(value, expected):
    assert parse_verbosity(value) == expected


@pytest.mark.parametrize('value', ['4', '-1', 'debug', '--1', '²'])
def test_bad_verbosity_rejected(value):
    with pytest.raises(ConfigError, match='VERBOSITY'):
        parse_verbosity(value)


def test_setup_logging_levels():
    root = logging.getLogger()
    saved = root.level
    try:
        setup_logging(3)
        assert root.level == logging.DEBUG
        setup_logging(0)
        assert root.level == logging.ERROR
    finally:
        root.setLevel(saved)
