# -*- coding: utf-8 -*-
"""
Property-Based Tests für den Datenaustausch Host ↔ Plugin.

Diese Tests validieren Invarianten, die für jede Blockgröße gelten müssen:
- Eingaben kommen bitgenau beim Plugin an
- Ergebnisse landen zeilenweise in den Ausgabepuffern
- Nach jedem Aufruf sind alle Runtime-Arrays freigegeben
"""
