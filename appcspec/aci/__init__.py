"""Reading, validating, building and writing App Container Images."""