"""
RxLedger backend.

Role-based e-prescription workflow over a registration/prescription contract
pair, an encrypted IPFS content store, and a relational index that mirrors
on-chain records for search and listing.
"""
