"""Biblio-Globus integration — tour operator catalog behind a cookie session.

Modules:
    auth        Form login, SessionCredentials with the rotating Z1 token
    client      Authenticated calls, 401 detection, Z1 rotation
    references  Day-long cache of countries, cities, hotels, board types
"""
