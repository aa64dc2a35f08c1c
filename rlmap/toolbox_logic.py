import contextlib
import logging
import os
import sys

import joblib

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def get_logger(log_name, logs_dir=None):
    """
    Configures the root logger once: a UTF-8 log file at DEBUG and the console at ERROR.

    Parameters:
    log_name (str): File name of the log, without extension.
    logs_dir (str, optional): Directory of the log file, './logs' by default.

    Returns:
    logging.Logger: The root logger.
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    if not logger.handlers:
        logs_path = logs_dir or os.path.join(os.getcwd(), 'logs')
        os.makedirs(logs_path, exist_ok=True)

        formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

        file_handler = logging.FileHandler(os.path.join(logs_path, f'{log_name}.log'), encoding='utf-8')
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.ERROR)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def handle_uncaught_exception(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger().critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))
    logging.shutdown()


def close_all_loggers():
    """Detaches and closes the handlers of the root logger and of every named logger."""
    loggers = [logging.getLogger()]
    loggers += [logger for logger in logging.root.manager.loggerDict.values()
                if isinstance(logger, logging.Logger)]
    for logger in loggers:
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)


@contextlib.contextmanager
def tqdm_joblib(tqdm_object):
    """
    Reports every finished joblib batch to the given tqdm progress bar while the context is active.
    """

    class TqdmBatchCompletionCallback(joblib.parallel.BatchCompletionCallBack):
        def __call__(self, *args, **kwargs):
            tqdm_object.update(n=self.batch_size)
            return super().__call__(*args, **kwargs)

    old_batch_callback = joblib.parallel.BatchCompletionCallBack
    joblib.parallel.BatchCompletionCallBack = TqdmBatchCompletionCallback
    try:
        yield tqdm_object
    finally:
        joblib.parallel.BatchCompletionCallBack = old_batch_callback
        tqdm_object.close()
