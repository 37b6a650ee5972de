# HTTP helpers package init
