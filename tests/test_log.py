import logging
from logging.handlers import RotatingFileHandler

from tunnel_deploy.common.log import setup_logger


def test_file_handler_only_by_default(tmp_path):
    logger = setup_logger("tunnel-deploy-quiet", str(tmp_path))

    assert [type(h) for h in logger.handlers] == [RotatingFileHandler]
    assert (tmp_path / "tunnel-deploy-quiet.log").exists()


def test_stream_handler_when_verbose(tmp_path):
    logger = setup_logger("tunnel-deploy-verbose", str(tmp_path), stream=True)

    assert [type(h) for h in logger.handlers] == [RotatingFileHandler, logging.StreamHandler]
    # a second call keeps the handlers it already has
    assert setup_logger("tunnel-deploy-verbose", str(tmp_path)).handlers == logger.handlers
