"""App names with labels and fetching of discovery documents."""