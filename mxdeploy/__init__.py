"""mxdeploy - provision a Matrix Synapse homeserver with Ansible."""

__version__ = "0.1.0"
