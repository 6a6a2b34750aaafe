from .google_maps import GoogleMapsClient, DistanceLookupError
from .hubspot import HubSpotClient, HubSpotError
