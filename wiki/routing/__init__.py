"""Route aliases derived from wiki page titles."""
