from tokenmarket.server.metadata_server import MetadataServer

__all__ = ["MetadataServer"]
