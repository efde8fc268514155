"""Jinja2 templates for the files written into an Ansible project."""
