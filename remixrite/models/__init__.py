"""
Pydantic models for clips, remixes, settlement rows and API payloads.
"""

from .clip import *
from .remix import *
from .api import *
