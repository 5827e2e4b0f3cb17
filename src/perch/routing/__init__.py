"""Routing — compiled routes and the immutable route table.

``RoutesFactory`` turns loaded collections into ``Route`` objects and
``RouteTable`` indexes them by method and by ``(collection, handle)``.
"""
