#Purpose: The OSRM "adapter/client".
#Sole responsibility: talk to OSRM via HTTP and return normalized outputs.
#Encapsulates OSRM-specific details:
#coordinate formatting (lon,lat)
#URL construction (/route, /trip)
#timeouts and error handling
#parsing response JSON into our internal shape
#It should not contain matching rules, traffic heuristics or scoring.


from dotenv import load_dotenv
import os
from typing import List, Tuple, Dict, Any, Optional
import requests

# Read OSRM base URL from environment
# Example in .env:
# BASE_URL=http://router.project-osrm.org
load_dotenv()
BASE_URL = os.getenv("BASE_URL")

# Internal coordinate type: (lat, lon)
LatLon = Tuple[float, float]

class OSRMError(Exception):
    """Custom exception for OSRM client errors."""
    pass

class OSRMClient:
    """
    OSRM Adapter / Client

    Sole responsibility:
    - Talk to OSRM via HTTP
    - Convert internal (lat, lon) → OSRM (lon,lat)
    - Return normalized outputs

    """
    def __init__(self, profile: str = "driving", timeout: int = 5, base_url: Optional[str] = None):
        self.base_url = base_url or BASE_URL
        self.timeout = timeout #the time to wait for a response from OSRM before giving up
        self.profile = profile #the mode of transportation (driving, walking, cycling)

        if not self.base_url:
            raise ValueError("OSRM base URL not set. Please set it in the .env file.")

    #----------------
    # Internal helper methods for coordinate formatting, requests, error handling
    #----------------
    def format_coordinates(self, coords: List[LatLon]) -> str:
        """Convert list of (lat, lon) to OSRM format 'lon,lat;lon,lat;...'"""
        return ';'.join([f"{lon},{lat}" for lat, lon in coords])

    def _get(self, service: str, coordinates: List[LatLon], params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{service}/v1/{self.profile}/{self.format_coordinates(coordinates)}"
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise OSRMError(f"OSRM request failed: {exc}") from exc

        #validating OSRM response
        if data.get("code") != "Ok":
            raise OSRMError(f"OSRM error: {data.get('message', 'Unknown error')}")
        return data

    #----------------
    # Public methods for route, trip
    #----------------
    def compute_route(self, coordinates: List[LatLon], geometry: bool = False) -> Dict[str, Any]:
        """
        calls the OSRM /route endpoint with the given coordinates and
        returns a dict with distance and duration

        Returns:
            {
                "distance": float, # in meters
                "duration": float, # in seconds (free-flow, no traffic)
                "polyline": str | None, # only when geometry=True
            }
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        data = self._get(
            "route",
            coordinates,
            params={
                "overview": "full" if geometry else "false",
                "geometries": "polyline",
            },
        )

        route = data["routes"][0] #take the first route (OSRM may return multiple routes)

        #Normalize output to internal format
        return {
            "distance": float(route["distance"]),
            "duration": float(route["duration"]),
            "polyline": route.get("geometry") if geometry else None,
        }

    #----------------
    # trip service (waypoint reordering)
    #----------------
    def compute_trip(self, coordinates: List[LatLon]) -> Dict[str, Any]:
        """
        calls OSRM /trip (travelling-salesman style ordering) keeping the
        first coordinate as the start and the last as the end.

        returns :
        {
            "ordered_indices": [int, ...], # input indices in visiting order
            "distance": float, # in meters
            "duration": float, # in seconds
            "polyline": str,
        }
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required to compute a trip.")

        data = self._get(
            "trip",
            coordinates,
            params={
                "roundtrip": "false",
                "source": "first",
                "destination": "last",
                "overview": "full",
                "geometries": "polyline",
            },
        )

        waypoints = data.get("waypoints") or []
        trips = data.get("trips") or []
        if len(waypoints) != len(coordinates) or not trips:
            raise OSRMError("OSRM trip response does not cover every waypoint")

        # waypoint_index is the position of each input coordinate inside the trip
        ordered_indices = sorted(range(len(waypoints)), key=lambda index: waypoints[index]["waypoint_index"])
        trip = trips[0]

        return {
            "ordered_indices": ordered_indices,
            "distance": float(trip["distance"]),
            "duration": float(trip["duration"]),
            "polyline": trip.get("geometry"),
        }
