"""Definition units: field and collection specs, schema checks and loading."""
