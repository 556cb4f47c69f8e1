# ridetrack/__init__.py
"""
RideTrack: трансляция LiveRide и отслеживание райдеров по взаимному согласию.
"""
