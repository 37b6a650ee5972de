from data_services.main import main

main()
