"""SongCard services: fetching, caching, colour extraction, layout and compositing."""
