"""
Core infrastructure modules for errors, storage, persistence and utilities.
"""

from .errors import *
from .utils import *
