#Marks routing as a package.
#Re-exports clean public APIs (OSRMClient, GeoTrafficOracle, RouteOptimizer, TTLCache)
#so other modules import from routing without knowing internal file names.
#No business logic.

from .cache import TTLCache
from .osrm_client import OSRMClient, OSRMError
from .policy import RoutingPolicy, default_routing_policy
from .traffic_service import GeoTrafficOracle, RouteOptimizationResult, TravelEstimate
from .route_service import RouteOptimizer

__all__ = [
    "TTLCache",
    "OSRMClient",
    "OSRMError",
    "RoutingPolicy",
    "default_routing_policy",
    "GeoTrafficOracle",
    "RouteOptimizationResult",
    "TravelEstimate",
    "RouteOptimizer",
]
