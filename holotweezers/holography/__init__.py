"""Hologram computation: phase toolbox and generation algorithms."""
