"""
SongCard - Music card renderer.

Turns a track's metadata (title, artist, cover art, lyrics, duration) into a
shareable PNG card, with a small FastAPI service for metadata lookup, artwork
proxying and server-side rendering.
"""
