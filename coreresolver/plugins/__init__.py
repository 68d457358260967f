"""Plugins that make up a server block's processing chain, and their registry."""