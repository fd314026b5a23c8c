"""
TALENT REBATE ENGINE
Rate resolution and audit for talent commission rebates.
"""

from .database import Database
from .processor import RebateService

__all__ = ['RebateService', 'Database']
