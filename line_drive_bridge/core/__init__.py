"""Domain core: signatures, source classification, path resolution, appends."""
