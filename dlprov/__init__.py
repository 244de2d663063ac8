"""DataLens host provisioner (dlprov).

Single-node convergence tool that prepares a VM for the DataLens stack:
 - resolves secrets (generated locally or read from Azure Key Vault)
 - writes them to one environment file shared by every container
 - ensures the docker network, loads the application image archives
 - replaces each container by name, data stores first and the proxy last

Every step is safe to re-run; a rerun converges to the same end state.
"""
