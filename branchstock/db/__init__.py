# Importing the package registers every mapped class and the log guard.
from . import models  # noqa: F401
