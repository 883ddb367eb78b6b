"""geoflow command line tools."""
