"""Error taxonomy for the discovery and enrichment pipeline."""


class LeadFinderError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigMissing(LeadFinderError):
    """Raised when a feature needs an API key that is not configured."""


class DiscoveryFailed(LeadFinderError):
    """Raised when a discovery run is rejected by its source or cannot reach it."""


class EnrichmentFailed(LeadFinderError):
    """Raised inside an enrichment attempt; recorded on the candidate, never surfaced."""


class MalformedUpstreamRecord(LeadFinderError):
    """Raised when an upstream payload cannot be interpreted at all."""
