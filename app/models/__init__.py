from app.core.database import Base
from app.models.certificate import Certificate

__all__ = ["Base", "Certificate"]
