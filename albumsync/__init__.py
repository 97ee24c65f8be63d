"""AlbumSync core package.

Modules:
- catalog: read-only catalog database access
- albums: albums.json exporter
- manifest: content-hashed manifest.json builder
- thumbnails: thumbnail cache and batch generation
- pipeline: full export run with progress notifications
- api: FastAPI app served to LAN clients
- server: sync server lifecycle (start/stop/info)
- events: server-sent event fan-out
- config: INI parsing and config object
"""

__version__ = "0.1.0"
