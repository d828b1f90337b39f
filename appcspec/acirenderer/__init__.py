"""Resolving image dependencies and choosing the files of a rendered image."""