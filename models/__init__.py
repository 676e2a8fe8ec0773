# models/__init__.py
from models.base import Base
from models.subject import Subject
from models.photoshoot import Photoshoot, PhotoshootAsset
from models.asset import Asset
from models.job import Job
from models.event import Event

__all__ = [
    "Base",
    "Subject",
    "Photoshoot",
    "PhotoshootAsset",
    "Asset",
    "Job",
    "Event",
]
