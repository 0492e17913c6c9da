"""
Forecast Submissions - predx value classes, tables and codecs.

Validates probabilistic forecasts at the row level, converts them between
interchange formats, and checks submissions against expected prediction sets.

Modules:
    classes - Prediction value classes (Point, Binary, BinCat, BinLwr, Sample)
    table - Immutable tables of prediction records
    convert - Conversion of raw rows into predx tables
    interchange - Flat CSV and JSON codecs with safe file export
    verify - Expected-set verification and reporting
    flusight - FluSight challenge import, export and expected sets
    cli - Command-line interface entrypoints
"""

from . import classes
from . import table
from . import convert
from . import interchange
from . import verify
from . import flusight
from . import cli

__version__ = "0.1.0"
