from .models import Base, FlashMoveRecord
from .db import Database

__all__ = ['Base', 'FlashMoveRecord', 'Database']
