# Import other models so Django can discover them
from .common.models import BaseModel  # noqa
from .quote_analysis.models import (  # noqa
    Analysis,
    AnalysisStatus,
    CompanyCacheEntry,
    DvfPrice,
    ReferencePrice,
    ScoreColor,
    StrategicMatrixRow,
    ZoneGeographique,
)
