import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s;%(levelname)-5s:%(name)-10s: %(message)s',
    datefmt='%m-%d/%H:%M',
)

# Component loggers hang off 'IGRS' so a single level change covers the core
logger = logging.getLogger('IGRS')

logging.getLogger('playwright').setLevel(logging.WARNING)
