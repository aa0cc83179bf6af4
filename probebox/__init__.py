import logging

from probebox.config import config

logging.basicConfig(
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
    level=logging.INFO,
)
if config.debug:
    logging.getLogger('probebox.runner.process').setLevel(logging.DEBUG)
    logging.getLogger('probebox.app').setLevel(logging.DEBUG)
    logging.getLogger('probebox.ui').setLevel(logging.DEBUG)
