"""FacetShape — Core Engine Package.

Triangulated body-shape geometry: line intersection, distance queries,
neighbor search, field-of-view visibility with contour extraction,
illumination tests, resizing and reference ellipsoids.
"""
