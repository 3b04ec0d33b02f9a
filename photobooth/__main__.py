from photobooth.service import main

main()
