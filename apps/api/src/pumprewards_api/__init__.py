"""Points ledger and redemption engine for the pump rewards programme."""
