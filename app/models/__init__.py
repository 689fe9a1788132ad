# Import every model here so Alembic autogenerate can discover them
# and so Base.metadata.create_all() works in tests.
# Referenced tables must come before tables that FK-reference them.

from app.models.property import Property                          # noqa: F401
from app.models.point_of_interest import PointOfInterest          # noqa: F401
from app.models.distance_calculation import DistanceCalculation   # noqa: F401
