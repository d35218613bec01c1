"""HTTP operator surface: health, metrics, status and live reconfiguration."""
