import logging

# Library default: stay quiet unless the application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())
