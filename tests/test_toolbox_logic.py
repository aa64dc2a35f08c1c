import logging
import os

import numpy as np
import pytest
from joblib import Parallel, delayed
from tqdm import tqdm

from rlmap.texture import RunLengthTexture
from rlmap.toolbox_logic import close_all_loggers, get_logger, tqdm_joblib


@pytest.fixture()
def isolated_root_logger(monkeypatch, tmp_path):
    """
    Root logger without handlers, working directory in a temporary folder.
    """
    root_logger = logging.getLogger()
    level = root_logger.level
    monkeypatch.setattr(root_logger, 'handlers', [])
    monkeypatch.chdir(tmp_path)
    yield root_logger
    close_all_loggers()
    root_logger.setLevel(level)


@pytest.mark.unit
def test_get_logger_creates_file_and_console_handlers(isolated_root_logger, tmp_path):
    logger = get_logger('texture_run')

    assert logger is isolated_root_logger
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    file_handler = next(h for h in logger.handlers if isinstance(h, logging.FileHandler))
    console_handler = next(h for h in logger.handlers if not isinstance(h, logging.FileHandler))
    assert file_handler.level == logging.DEBUG
    assert console_handler.level == logging.ERROR
    assert os.path.isfile(tmp_path / 'logs' / 'texture_run.log')


@pytest.mark.unit
def test_get_logger_configures_once(isolated_root_logger):
    get_logger('first')
    get_logger('second')
    assert len(isolated_root_logger.handlers) == 2


@pytest.mark.unit
def test_close_all_loggers(isolated_root_logger):
    get_logger('to_close')
    named_logger = logging.getLogger('rlmap.tests.named')
    named_logger.addHandler(logging.NullHandler())

    close_all_loggers()

    assert isolated_root_logger.handlers == []
    assert named_logger.handlers == []


@pytest.mark.unit
def test_texture_log_to_file(isolated_root_logger, tmp_path, checkerboard_2d):
    texture = RunLengthTexture(neighborhood_radius=1, offsets=[(1, 0)], number_of_bins=2,
                               intensity_range=(0, 1), log_to_file=True)
    texture.extract_features(checkerboard_2d)
    for handler in isolated_root_logger.handlers:
        handler.flush()

    log_file = tmp_path / 'logs' / f'{texture.logger_date_time}_RunLengthTexture.log'
    content = log_file.read_text(encoding='utf-8')
    assert 'RunLengthTexture(neighborhood_radius=1' in content
    assert 'Run-length texture of 2D grid (5, 5)' in content


@pytest.mark.unit
def test_tqdm_joblib_restores_callback():
    import joblib.parallel

    original_callback = joblib.parallel.BatchCompletionCallBack
    with tqdm_joblib(tqdm(total=4, disable=True)):
        assert joblib.parallel.BatchCompletionCallBack is not original_callback
        results = Parallel(n_jobs=1)(delayed(np.square)(i) for i in range(4))

    assert results == [0, 1, 4, 9]
    assert joblib.parallel.BatchCompletionCallBack is original_callback
