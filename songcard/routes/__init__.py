"""SongCard HTTP routes."""
