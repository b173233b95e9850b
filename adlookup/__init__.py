"""AD Lookup: directory login, account lookup/unlock and username autocomplete."""
