# Schemas package (re-export feature modules for stable imports)
from .files.file import *
from .common.common import *
