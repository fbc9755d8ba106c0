"""
cloud-deploy: provider credential resolution and image distribution.

Modules:
- credentials: resolve provider credential bundles from environment, secrets store or Vault
- vault: authenticated Vault sessions reading KV v2 secrets
- registry: ECR, ACR and Artifact Registry variants plus the Distributor
- skopeo_client: load a source image once and push it with skopeo
"""
