"""
Movie Party server - rooms, signaling relay and synchronized playback
"""
__version__ = "1.2.0"
