"""Multi-repository trunk synchronization behind `kira latest`."""
